from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from .config import load_config
from .runner import DigestRunner


CONFIG_TEMPLATE = """\
lookback_days: 31
nvd_api_key: ${NVD_API_KEY}
retry:
  max_retries: 3
  initial_delay_ms: 1000
  backoff_multiplier: 2
ghost:
  url: https://blog.example.com/
  admin_key: ${GHOST_ADMIN_KEY}
notify:
  - slack:${SLACK_WEBHOOK_URL}
settings:
  request_timeout_seconds: 20
  user_agent: advisory-digest/0.1
feeds:
  - id: fortinet
    name: Fortinet
    url: https://filestore.fortinet.com/fortiguard/rss/ir.xml
    keywords: [fortigate, fortios]
    docs_url_template: https://docs.fortinet.com/document/{product}/{version}/release-notes
    enrich_cve: true
    cvss_threshold: 7.0
    tags: [security, fortinet]
"""


def main() -> int:
    args = _parse_args()
    if args.init_config:
        _init_config(Path(args.config))
        return 0
    _configure_logging(args.verbose)
    config = load_config(args.config)

    result = asyncio.run(DigestRunner(config).run(dry_run=args.dry_run))
    print(json.dumps(result.as_dict(), indent=2))
    return 0 if result.success else 1


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Security advisory & firmware digest")
    parser.add_argument("--config", default="./config.yaml")
    parser.add_argument("--dry-run", action="store_true", help="Build the digest without publishing or notifying")
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--init-config", action="store_true", help="Create a config.yaml template and exit")
    return parser.parse_args()


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s")


def _init_config(target: Path) -> None:
    if target.exists():
        raise SystemExit(f"Config already exists at {target}")
    target.write_text(CONFIG_TEMPLATE, encoding="utf-8")
    print(f"Wrote config template to {target}")


if __name__ == "__main__":
    raise SystemExit(main())
