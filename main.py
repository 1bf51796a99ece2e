"""CLI entrypoint for the map timelapse pipeline."""

import sys

from map_timelapse.app import MapTimelapse


def main() -> int:
    """Capture pending checkpoints and render the session animation."""
    timelapse = MapTimelapse()
    return timelapse.run()


if __name__ == "__main__":
    sys.exit(main())
