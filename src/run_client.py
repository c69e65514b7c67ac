import os
import sys
import json
import asyncio
import logging
import argparse

from dotenv import load_dotenv

from auth import SessionStateHolder, create_marker_storage
from client import ClientConfig, ClientError, CredentialedClient
from utils.redis_client import close_redis_clients

load_dotenv()

logger = logging.getLogger("portal.run_client")


def configure_logging() -> str:
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
    if log_level not in valid_levels:
        print(f"Warning: Invalid LOG_LEVEL '{log_level}'. Using INFO instead.", file=sys.stderr)
        print(f"Valid levels: {', '.join(valid_levels)}", file=sys.stderr)
        log_level = 'INFO'

    logging.basicConfig(
        level=getattr(logging, log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    return log_level


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Call the portal API with session and CSRF handling.")
    parser.add_argument("method", choices=["GET", "POST", "PUT", "PATCH", "DELETE"], type=str.upper)
    parser.add_argument("path", help="API path relative to the base URL, e.g. /employees/")
    parser.add_argument("--data", help="JSON request body")
    parser.add_argument("--base-url", default=None, help="API base URL (default: PORTAL_API_BASE_URL)")
    parser.add_argument("--username", default=os.getenv("PORTAL_USERNAME"))
    parser.add_argument("--password", default=os.getenv("PORTAL_PASSWORD"))
    parser.add_argument("--output", help="Write the raw response body to this file instead of printing JSON")
    parser.add_argument("--logout", action="store_true", help="Log out after the request")
    return parser


async def amain(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        body = json.loads(args.data) if args.data else None
    except json.JSONDecodeError as e:
        logger.error(f"--data is not valid JSON: {e}")
        return 2

    config = ClientConfig.from_env(base_url=args.base_url)
    storage = create_marker_storage(
        config.marker_storage,
        marker_path=config.marker_path,
        redis_url=config.redis_url,
    )

    async with CredentialedClient(config) as client:
        session = SessionStateHolder(client, storage=storage)
        await session.bootstrap()

        try:
            if not session.authenticated and args.username and args.password:
                result = await session.login(args.username, args.password)
                if not result.success:
                    logger.error(f"Login failed: {result.error}")
                    return 1

            response_type = "bytes" if args.output else "json"
            data = await client.request(args.method, args.path, json=body, response_type=response_type)
        except ClientError as e:
            logger.error(f"Request failed: {e}")
            return 1
        finally:
            if args.logout:
                await session.logout()
            await session.aclose()
            await close_redis_clients()

        if args.output:
            with open(args.output, "wb") as f:
                f.write(data)
            logger.info(f"Wrote {len(data)} bytes to {args.output}")
        else:
            print(json.dumps(data, indent=2, ensure_ascii=False))

    return 0


def main() -> None:
    configure_logging()
    sys.exit(asyncio.run(amain()))


if __name__ == "__main__":
    main()
