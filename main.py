#!/usr/bin/env python3
"""
LinkedIn Capture - Main Entry Point

Usage:
    # Run API server
    python main.py server

    # Generate a credential encryption key
    python main.py generate-key

    # Link a LinkedIn account to a user id
    python main.py link --user-id u1 --email me@example.com

    # Scrape profiles, paced apart (prompts for an email verification code if LinkedIn asks)
    python main.py scrape --user-id u1 https://www.linkedin.com/in/someone/

    # Show account health and rate limit stats
    python main.py health --user-id u1

    # Mint an API bearer token for a user id
    python main.py token --user-id u1
"""

import sys
import json
import asyncio
import argparse
import getpass
import logging

from api.config import get_config
from api.logging_config import setup_logging
from core.errors import ProfileCaptureError, ConfigurationError, EmailVerificationRequired
from core.vault import CredentialVault

logger = logging.getLogger(__name__)


def check_environment(require_jwt: bool = False) -> bool:
    """Check that required environment variables are set."""
    missing = get_config().validate()
    if not require_jwt:
        missing = [m for m in missing if not m.startswith("JWT_SECRET_KEY")]

    if missing:
        print("❌ Missing or invalid settings:")
        for var in missing:
            print(f"  - {var}")
        print("\nPlease set these in your .env file or environment.")
        return False
    return True


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = False):
    """Run the FastAPI server."""
    import uvicorn

    print(f"🚀 Starting server on {host}:{port}")
    uvicorn.run(
        "api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


async def link_account(user_id: str, email: str, password: str):
    from api.database import get_database

    database = get_database(get_config().DATABASE_PATH)
    await database.init()
    vault = CredentialVault.from_hex(get_config().LINKEDIN_CREDENTIAL_KEY, database)
    credential_id = await vault.store(user_id, email, password)
    print(f"✅ Linked LinkedIn account for {user_id} (credential {credential_id})")


async def scrape(user_id: str, profile_urls: list):
    """Scrape profiles one by one, completing email verification interactively if needed."""
    from core.orchestrator import ScrapeOptions, create_scraper

    scraper = await create_scraper(get_config())
    try:
        for index, profile_url in enumerate(profile_urls):
            if index:
                await scraper.simulator.space_requests()
            try:
                profile = await scraper.scrape_profile(profile_url, ScrapeOptions(user_id=user_id))
            except EmailVerificationRequired as e:
                print("📧 LinkedIn sent a verification code to the account email.")
                while True:
                    code = input("Verification code: ").strip()
                    result = await scraper.submit_verification_code(e.verification_id, code, user_id=user_id)
                    if result.success:
                        print("✅ Verified. Session saved; run the scrape again once the pacing window passes.")
                        return 0
                    print(f"❌ {result.error}")
                    if not result.attempts_remaining:
                        return 1

            print(json.dumps(profile.to_dict(), indent=2))
            if profile.needs_manual_review:
                print(f"⚠️  Partial data, missing: {', '.join(profile.missing_fields)}")
        return 0
    except ProfileCaptureError as e:
        print(f"❌ {e.code}: {e.message}")
        if e.user_action:
            print(f"   {e.user_action}")
        return 1
    finally:
        await scraper.shutdown()


async def show_health(user_id: str):
    from api.database import get_database
    from core.rate_limiter import AccountManager

    database = get_database(get_config().DATABASE_PATH)
    await database.init()
    manager = AccountManager(database, get_config().rate_limits)
    print(json.dumps({
        "health": await manager.get_account_health(user_id),
        "rateLimits": await manager.get_rate_limit_stats(user_id),
    }, indent=2))


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="LinkedIn Capture - authenticated LinkedIn profile capture"
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Server command
    server_parser = subparsers.add_parser('server', help='Run API server')
    server_parser.add_argument('--host', default='0.0.0.0', help='Host to bind to')
    server_parser.add_argument('--port', type=int, default=8080, help='Port to bind to')
    server_parser.add_argument('--reload', action='store_true', help='Enable auto-reload')

    subparsers.add_parser('generate-key', help='Print a new LINKEDIN_CREDENTIAL_KEY')

    # Link command
    link_parser = subparsers.add_parser('link', help='Store encrypted LinkedIn credentials')
    link_parser.add_argument('--user-id', required=True, help='Owner user id')
    link_parser.add_argument('--email', required=True, help='LinkedIn account email')

    # Scrape command
    scrape_parser = subparsers.add_parser('scrape', help='Scrape LinkedIn profiles, paced apart')
    scrape_parser.add_argument('--user-id', required=True, help='User whose linked account is used')
    scrape_parser.add_argument('profile_urls', nargs='+', help='https://www.linkedin.com/in/...')

    # Health command
    health_parser = subparsers.add_parser('health', help='Show account health and rate limits')
    health_parser.add_argument('--user-id', required=True)

    token_parser = subparsers.add_parser('token', help='Print an API access token')
    token_parser.add_argument('--user-id', required=True)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    if args.command == 'generate-key':
        print(CredentialVault.generate_key())
        return

    # Check environment
    if not check_environment(require_jwt=args.command in ('server', 'token')):
        sys.exit(1)

    settings = get_config()
    setup_logging(log_dir=settings.LOG_DIR, level=settings.LOG_LEVEL)

    try:
        if args.command == 'server':
            run_server(args.host, args.port, args.reload)

        elif args.command == 'link':
            password = getpass.getpass("LinkedIn password: ")
            asyncio.run(link_account(args.user_id, args.email, password))

        elif args.command == 'scrape':
            sys.exit(asyncio.run(scrape(args.user_id, args.profile_urls)))

        elif args.command == 'health':
            asyncio.run(show_health(args.user_id))

        elif args.command == 'token':
            from api.auth import create_access_token
            print(create_access_token(args.user_id))
    except ConfigurationError as e:
        print(f"❌ {e.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
