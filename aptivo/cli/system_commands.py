"""
System CLI commands: config
"""
from aptivo.config import settings, feature_flags


class SystemCommand:
    """System CLI command handler."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def execute(self, args) -> int:
        if args.system_action == "config":
            return self._config(args)
        else:
            print("Error: Unknown system action")
            return 1

    def _config(self, args) -> int:
        """Show configuration; secrets are reported as set or missing only."""
        print("=== Configuration ===")
        print(f"Environment: {settings.ENVIRONMENT}")
        print(f"Log level: {settings.LOG_LEVEL}")
        print(f"Database: {settings.DATABASE_URL.split('@')[-1]}")
        print(f"Site URL: {settings.SITE_URL}")
        print(f"CORS origins: {', '.join(settings.cors_origins)}")
        print(f"Service role key: {'set' if settings.SERVICE_ROLE_KEY else 'missing'}")
        print(f"Rate limiting: {'on' if settings.RATE_LIMIT_ENABLED else 'off'}")

        print("\n--- Feature Flags ---")
        for name, enabled in feature_flags.get_all_flags().items():
            print(f"  {name}: {enabled}")

        if not args.check:
            return 0

        problems = []
        if not settings.is_development:
            if settings.JWT_SECRET_KEY.startswith("dev-"):
                problems.append("JWT_SECRET_KEY still has its development default")
            if settings.JWT_REFRESH_SECRET_KEY.startswith("refresh-secret"):
                problems.append("JWT_REFRESH_SECRET_KEY still has its development default")
        if not settings.SERVICE_ROLE_KEY:
            problems.append("SERVICE_ROLE_KEY is not set; privileged handlers accept admin tokens only")

        if problems:
            print("\n--- Problems ---")
            for problem in problems:
                print(f"  - {problem}")
            return 1
        print("\nOK: configuration valid")
        return 0
