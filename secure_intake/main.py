import argparse
import json
import sys
from pathlib import Path

from secure_intake.config.settings import Settings
from secure_intake.logging.logger import Log
from secure_intake.pipeline.exceptions import IntakeError
from secure_intake.pipeline.intake import build_intake
from secure_intake.pipeline.models import UploadRequest


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest one file into upload storage.")
    parser.add_argument("file", type=Path, help="file to ingest")
    parser.add_argument("--content-type", default="", help="declared content type")
    parser.add_argument("--name", default=None, help="declared original filename")
    parser.add_argument("--owner", default=None, help="opaque caller identity token")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Entry point: load settings -> build pipeline -> ingest one file."""
    args = _parse_args(argv)
    settings = Settings()
    Log.configure(settings.log_level)
    intake = build_intake(settings)

    with args.file.open("rb") as fh:
        request = UploadRequest(
            stream=fh,
            declared_content_type=args.content_type,
            declared_filename=args.name if args.name is not None else args.file.name,
            declared_size=args.file.stat().st_size,
            owner_token=args.owner,
        )
        try:
            asset = intake.ingest(request)
        except IntakeError as exc:
            print(json.dumps({"success": False, "error": exc.code, "message": exc.public_message}))
            return 1

    print(json.dumps({"success": True, "data": asset.to_response()}))
    return 0


if __name__ == "__main__":
    sys.exit(main())
