"""Photo to embroidery stitch pattern conversion."""

from threadstitch.pattern_pipeline import EmbroideryPipeline
from threadstitch.slicer.parameters import EmbroideryParameters
from threadstitch.slicer.stitches import EmbroideryPattern, Stitch, StitchSequence

__version__ = "0.1.0"

__all__ = ["EmbroideryParameters", "EmbroideryPattern", "EmbroideryPipeline", "Stitch", "StitchSequence"]
