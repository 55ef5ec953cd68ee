"""
CLI main entry point.
"""

import argparse
import logging
import sys
from pathlib import Path

from ..config import Config, create_default_config, load_config
from ..feed_client import FeedError, create_feed_client
from ..services import (
    CompanyNotFoundError,
    CompanyService,
    DocumentDownloadService,
    DocumentNotFoundError,
    InvalidCompanyError,
    ManifestationService,
    ManifestationValidationError,
    SyncAlreadyRunningError,
    SyncRunController,
)
from ..state_store import StateStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="fiscalflow",
        description="Sync NF-e documents from the Nuvem Fiscal distribution feed",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init-config command
    subparsers.add_parser("init-config", help="Write a default config file")

    # company-add command
    company_parser = subparsers.add_parser("company-add", help="Register a company")
    company_parser.add_argument("--cnpj", required=True, help="Company CNPJ (punctuation ok)")
    company_parser.add_argument("--legal-name", required=True, help="Razão social")
    company_parser.add_argument("--trade-name", help="Nome fantasia")
    company_parser.add_argument("--email", help="Contact email for Nuvem Fiscal")
    company_parser.add_argument(
        "--local-only",
        action="store_true",
        help="Do not register the company with Nuvem Fiscal",
    )

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Pull new documents for a company")
    sync_parser.add_argument("--company-id", type=int, required=True, help="Company ID")
    sync_parser.add_argument(
        "--deadline",
        type=float,
        help="Stop the run after this many seconds (overrides config)",
    )

    # runs command
    runs_parser = subparsers.add_parser("runs", help="Show recent sync runs")
    runs_parser.add_argument("--company-id", type=int, help="Filter by company ID")
    runs_parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Maximum runs to show (default: 20)",
    )

    # manifest command
    manifest_parser = subparsers.add_parser("manifest", help="Manifest an NF-e")
    manifest_parser.add_argument("--document-id", type=int, required=True, help="Document ID")
    manifest_parser.add_argument(
        "--type",
        dest="manifestation_type",
        required=True,
        help="ciencia, confirmacao, desconhecimento or nao_realizada",
    )
    manifest_parser.add_argument("--justification", help="Required for negative manifestations")

    # download command
    download_parser = subparsers.add_parser("download", help="Download a document's XML or PDF")
    download_parser.add_argument("--document-id", type=int, required=True, help="Document ID")
    download_parser.add_argument(
        "--type",
        dest="file_type",
        choices=["xml", "pdf"],
        default="xml",
        help="File type (default: xml)",
    )
    download_parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("."),
        help="Directory to write the file to (default: current directory)",
    )

    # status command
    status_parser = subparsers.add_parser("status", help="Show document statistics")
    status_parser.add_argument("--company-id", type=int, help="Filter by company ID")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the webhook and API endpoints")
    serve_parser.add_argument("--host", type=str, help="Host to bind (overrides config)")
    serve_parser.add_argument("--port", type=int, help="Port to listen on (overrides config)")

    return parser


def cmd_init_config(config_path: Path) -> int:
    """Write a default config file."""
    if config_path.exists():
        print(f"❌ Config already exists: {config_path}")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_company_add(
    config: Config,
    cnpj: str,
    legal_name: str,
    trade_name: str | None = None,
    email: str | None = None,
    local_only: bool = False,
) -> int:
    """Register a company."""
    store = StateStore(config.state_db_path)
    feed = None
    if not local_only:
        if config.nuvem_fiscal.has_credentials():
            feed = create_feed_client(config)
        else:
            print("⚠️  No Nuvem Fiscal credentials, registering locally only")

    service = CompanyService(store, feed)
    try:
        company = service.register(cnpj, legal_name, trade_name=trade_name, email=email)
    except InvalidCompanyError as e:
        print(f"❌ {e}")
        return 1

    print(f"✓ Company [{company.id}] {company.legal_name} ({company.cnpj}) registered")
    return 0


def cmd_sync(config: Config, company_id: int, deadline: float | None = None) -> int:
    """Run one sync for a company."""
    errors = config.validate()
    if errors:
        print("❌ Invalid configuration:")
        for error in errors:
            print(f"   - {error}")
        return 1

    if deadline is not None:
        config.sync.deadline_seconds = deadline

    store = StateStore(config.state_db_path)
    controller = SyncRunController.from_config(config, create_feed_client(config), store)

    print(f"🔄 Syncing company {company_id}...")
    try:
        result = controller.run(company_id)
    except CompanyNotFoundError as e:
        print(f"❌ {e}")
        return 1
    except SyncAlreadyRunningError as e:
        print(f"⚠️  {e}")
        return 1

    print(f"\n{'✓' if result.success else '❌'} {result.message}")
    print(f"   Run:        {result.sync_run_id}")
    print(f"   NSU:        {result.start_cursor} → {result.final_cursor}")
    print(f"   Iterations: {result.iterations}")
    if result.detail:
        print(f"   Details:    {result.detail}")

    return 0 if result.success else 1


def cmd_runs(config: Config, company_id: int | None = None, limit: int = 20) -> int:
    """Show sync run history."""
    store = StateStore(config.state_db_path)
    runs = store.list_sync_runs(company_id=company_id, limit=limit)

    if not runs:
        print("No sync runs yet")
        return 0

    print("\n📜 Sync Runs")
    print("=" * 72)
    for run in runs:
        final = run.final_nsu if run.final_nsu is not None else "-"
        print(
            f"  [{run.id}] company={run.company_id} {run.status.value:<11} "
            f"NSU {run.last_nsu} → {final}  docs={run.documents_synced}  {run.started_at}"
        )
        if run.details:
            print(f"        {run.details}")
    print()
    return 0


def cmd_manifest(
    config: Config,
    document_id: int,
    manifestation_type: str,
    justification: str | None = None,
) -> int:
    """Manifest an NF-e."""
    store = StateStore(config.state_db_path)
    service = ManifestationService(create_feed_client(config), store)

    try:
        result = service.manifest(document_id, manifestation_type, justification)
    except (ManifestationValidationError, DocumentNotFoundError) as e:
        print(f"❌ {e}")
        return 1
    except FeedError as e:
        print(f"❌ Nuvem Fiscal rejected the manifestation: {e}")
        return 1

    print(
        f"✓ Document {result.access_key} manifested "
        f"({result.event_type} → {result.manifestation_status.value})"
    )
    return 0


def cmd_download(config: Config, document_id: int, file_type: str, output_dir: Path) -> int:
    """Download a document's XML or DANFE PDF."""
    store = StateStore(config.state_db_path)
    service = DocumentDownloadService(create_feed_client(config), store)

    try:
        downloaded = service.download(document_id, file_type)
    except DocumentNotFoundError as e:
        print(f"❌ {e}")
        return 1
    except FeedError as e:
        print(f"❌ Download failed: {e}")
        return 1

    output_dir.mkdir(parents=True, exist_ok=True)
    target = output_dir / downloaded.filename
    target.write_bytes(downloaded.content)
    print(f"✓ Saved {target} ({len(downloaded.content)} bytes)")
    return 0


def cmd_status(config: Config, company_id: int | None = None) -> int:
    """Show document statistics."""
    store = StateStore(config.state_db_path)
    stats = store.get_stats(company_id)

    title = f"Company {company_id}" if company_id is not None else "All companies"
    print(f"\n📊 Status: {title}")
    print("=" * 40)
    print(f"  Documents:              {stats['documents_total']}")
    for doc_type, count in sorted(stats["documents_by_type"].items()):
        print(f"    {doc_type:<22}{count}")
    print(f"  Total value:            {stats['total_value']}")
    print(f"  Suppliers:              {stats['suppliers_total']}")
    if stats["manifestation_summary"]:
        print("  NF-e manifestation:")
        for status, count in sorted(stats["manifestation_summary"].items()):
            print(f"    {status:<22}{count}")
    if company_id is not None:
        last_nsu = stats["last_nsu"] if stats["last_nsu"] is not None else "-"
        print(f"  Last NSU:               {last_nsu}")
        print(f"  Last sync:              {stats['last_sync_at'] or 'never'}")
    print()

    return 0


def cmd_serve(
    config: Config,
    config_path: Path,
    host: str | None = None,
    port: int | None = None,
) -> int:
    """Run the webhook and API endpoints."""
    from ..web.app import run_server

    try:
        run_server(config, config_path=str(config_path), host=host, port=port)
    except KeyboardInterrupt:
        print("\n✓ Server stopped")

    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "company-add":
        return cmd_company_add(
            config,
            parsed.cnpj,
            parsed.legal_name,
            trade_name=parsed.trade_name,
            email=parsed.email,
            local_only=parsed.local_only,
        )
    elif parsed.command == "sync":
        return cmd_sync(config, parsed.company_id, parsed.deadline)
    elif parsed.command == "runs":
        return cmd_runs(config, parsed.company_id, parsed.limit)
    elif parsed.command == "manifest":
        return cmd_manifest(
            config, parsed.document_id, parsed.manifestation_type, parsed.justification
        )
    elif parsed.command == "download":
        return cmd_download(config, parsed.document_id, parsed.file_type, parsed.output_dir)
    elif parsed.command == "status":
        return cmd_status(config, parsed.company_id)
    elif parsed.command == "serve":
        return cmd_serve(config, parsed.config, parsed.host, parsed.port)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
