"""
Face Login Session from the command line

Runs one login session against the local webcam: loads the face models,
opens the camera, then registers or verifies the face in front of it.

Usage:
    # Enroll the face in front of the camera (overwrites any previous one)
    python scripts/run_session.py register

    # Verify the face in front of the camera
    python scripts/run_session.py login

    # Show / remove the current enrollment
    python scripts/run_session.py status
    python scripts/run_session.py clear

    # Hardware-free dry run (stub camera + stub extractor)
    python scripts/run_session.py login --stub

Exit codes (login): 0 = match, 1 = no match, 2 = session error.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(PROJECT_ROOT))

from core.camera import StubCamera
from core.config import get_config, get_logging_config, resolve_path
from core.enrollment_store import EnrollmentStore
from core.errors import IncompatibleTemplateError
from core.face_embedder import FaceEmbedder, StubEmbeddingExtractor
from core.matching import MatchOutcome
from core.session_controller import build_session_controller


def print_banner(title: str) -> None:
    print()
    print("=" * 60)
    print(f"  {title}")
    print("=" * 60)


def open_store(config: dict, extractor) -> EnrollmentStore:
    """Open the enrollment store configured in config.yaml."""
    storage = config["storage"]
    return EnrollmentStore(
        db_path=resolve_path(storage["db_path"]),
        key=storage["key"],
        expected_dim=extractor.embedding_dim,
        extractor_id=extractor.model_id,
    )


async def run(args: argparse.Namespace) -> int:
    config = get_config()

    if args.stub:
        extractor = StubEmbeddingExtractor(default=[0.1] * 128)
        camera = StubCamera()
    else:
        extractor = FaceEmbedder(config.get("extractor", {}))
        camera = None

    store = open_store(config, extractor)

    try:
        if args.command == "status":
            try:
                record = store.get()
            except IncompatibleTemplateError as e:
                print(f"Enrollment unusable: {e}")
                return 1
            if record is None:
                print("No face enrolled.")
                return 1
            for key, value in record.to_summary().items():
                print(f"  {key:14s} {value}")
            return 0

        if args.command == "clear":
            removed = store.clear()
            print("Enrollment removed." if removed else "No enrollment to remove.")
            return 0

        if args.device is not None:
            config = dict(config)
            config["camera"] = dict(config.get("camera", {}), device_id=args.device)

        controller = build_session_controller(config, extractor=extractor, camera=camera, store=store)

        async with controller:
            print_banner("Loading face models")
            if not await controller.initialize():
                print(f"ERROR: {controller.error}")
                return 2

            print_banner("Opening camera")
            if not await controller.start_camera():
                print(f"ERROR: {controller.error}")
                return 2

            if args.command == "register":
                print_banner("Registering face")
                record = await controller.capture_and_register()
                if record is None:
                    print(f"ERROR: {controller.error}")
                    return 2
                print(controller.notice)
                return 0

            print_banner("Verifying face")
            result = await controller.capture_and_login()
            if result is None:
                print(f"ERROR: {controller.error or 'capture did not run'}")
                return 2

            if args.verbose:
                print("\nSession log:")
                for entry in controller.event_log:
                    print(f"  {entry}")

            if result.outcome is MatchOutcome.ACCEPT:
                print_banner(f"LOGIN: MATCH (distance {result.distance:.3f})")
                return 0
            if result.distance is not None:
                print_banner(f"LOGIN: NO MATCH (distance {result.distance:.3f})")
                return 1
            print_banner(f"LOGIN: ERROR ({controller.error})")
            return 2
    finally:
        store.close()


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Register or verify a face with the local webcam",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "command", choices=["register", "login", "status", "clear"],
        help="Session action to run",
    )
    parser.add_argument(
        "--device", type=int, default=None,
        help="Camera device id (default: camera.device_id from config.yaml)",
    )
    parser.add_argument(
        "--stub", action="store_true",
        help="Use the stub camera and extractor (no hardware or models needed)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Print the session event log",
    )
    args = parser.parse_args()

    level = get_logging_config().get("level", "INFO")
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
