import argparse
import json
import logging
import sys

import numpy as np
from PIL import Image

from threadstitch.config.config_loader import load_parameters, load_thread_catalog, load_thread_catalogs
from threadstitch.pattern_pipeline import EmbroideryPipeline
from threadstitch.slicer.parameters import EmbroideryParameters
from threadstitch.utils.result import EmbroideryError, Success

LOGGER = logging.getLogger("threadstitch")


def load_image(path: str) -> np.ndarray:
    with Image.open(path) as img:
        return np.asarray(img.convert("RGB"))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="threadstitch", description="Convert a photo into an embroidery stitch pattern.")
    parser.add_argument("input", help="input image (PNG, JPEG, ...)")
    parser.add_argument("--output", "-o", default="pattern.json", help="where to write the pattern JSON")
    parser.add_argument("--params", help="JSON file with embroidery parameters")
    parser.add_argument("--catalog", help="use only this bundled thread catalog")
    parser.add_argument("--colors", type=int, help="override the colour limit")
    parser.add_argument("--no-silk", action="store_true", help="disable silk shading")
    parser.add_argument("--no-sfumato", action="store_true", help="disable sfumato layers")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        params = load_parameters(args.params) if args.params else EmbroideryParameters()
        if args.colors is not None:
            params = params.with_changes(color_limit=args.colors)
        if args.no_silk:
            params = params.with_changes(enable_silk_shading=False)
        if args.no_sfumato:
            params = params.with_changes(enable_sfumato=False)
        catalogs = [load_thread_catalog(args.catalog)] if args.catalog else load_thread_catalogs()
        image = load_image(args.input)
    except (OSError, ValueError, EmbroideryError) as exc:
        LOGGER.error("%s", exc)
        return 2

    def on_progress(fraction: float, stage: str) -> None:
        LOGGER.info("[%3.0f%%] %s", fraction * 100.0, stage)

    result = EmbroideryPipeline(catalogs=catalogs).process(image, params, progress_callback=on_progress)
    if not isinstance(result, Success):
        LOGGER.error("%s (%s)", result.error, result.kind.value)
        return 1

    pattern = result.data
    with open(args.output, "w", encoding="utf-8") as f:
        json.dump(pattern.to_dict(), f, indent=2)
    LOGGER.info(
        "Wrote %s: %s stitches, %s thread changes", args.output, pattern.total_stitches, pattern.thread_changes
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
