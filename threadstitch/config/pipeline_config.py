"""All stage parameters of one pipeline run in a single object."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, List

from threadstitch.image_analysis.pipeline import PreprocessingConfig
from threadstitch.quantization.quantizer import QuantizationParameters
from threadstitch.techniques.opacity import OpacityParameters
from threadstitch.techniques.sfumato import SfumatoParameters
from threadstitch.techniques.thread_flow import ThreadFlowParameters
from threadstitch.utils.result import ParameterError


@dataclass(frozen=True)
class PipelineConfig:
    preprocessing: PreprocessingConfig = field(default_factory=PreprocessingConfig)
    quantization: QuantizationParameters = field(default_factory=QuantizationParameters)
    thread_flow: ThreadFlowParameters = field(default_factory=ThreadFlowParameters)
    opacity: OpacityParameters = field(default_factory=OpacityParameters)
    sfumato: SfumatoParameters = field(default_factory=SfumatoParameters)

    def __post_init__(self) -> None:
        problems = self.problems()
        if problems:
            raise ParameterError("Invalid pipeline configuration: " + ", ".join(problems))

    def problems(self) -> List[str]:
        checks = [
            ("preprocessing", self.preprocessing.is_valid),
            ("quantization", self.quantization.is_valid),
            ("thread_flow", self.thread_flow.is_valid),
            ("opacity", self.opacity.is_valid),
            ("sfumato", self.sfumato.is_valid),
        ]
        return [name for name, ok in checks if not ok]

    def with_changes(self, **kwargs: Any) -> "PipelineConfig":
        return replace(self, **kwargs)

    @classmethod
    def optimal_for(cls, width: int, height: int) -> "PipelineConfig":
        return cls(
            preprocessing=PreprocessingConfig.optimal_for(width, height),
            quantization=QuantizationParameters.optimal_for(width, height),
        )
