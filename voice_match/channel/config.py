from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Tuple

from ..config import ProviderConfig
from ..models.direction import TranslationDirection

SYSTEM_INSTRUCTION_TEMPLATE = """You are a professional real-time voice translator between English and Russian.
STRICT RULES:
1. ONLY output the direct {target} translation.
2. NEVER repeat, echo, or include the user's original {source} words in your response or transcription.
3. DO NOT include any conversational filler, explanations, or labels.
4. If you hear noise or unintelligible audio, output NOTHING.
5. Provide text transcription ONLY for the translated {target} text."""


def build_system_instruction(direction: TranslationDirection) -> str:
    return SYSTEM_INSTRUCTION_TEMPLATE.format(
        source=direction.source_language,
        target=direction.target_language,
    )


@dataclass(frozen=True)
class ChannelConfig:
    """Everything the remote engine is told once, in the setup message."""

    model: str
    voice: str
    system_instruction: str
    response_modalities: Tuple[str, ...] = ("AUDIO",)
    input_transcription: bool = True
    output_transcription: bool = True

    @classmethod
    def for_direction(cls, direction: TranslationDirection, provider: ProviderConfig) -> "ChannelConfig":
        return cls(
            model=provider.model,
            voice=provider.voice_for(direction),
            system_instruction=build_system_instruction(direction),
        )

    def to_setup_payload(self) -> Dict[str, Any]:
        setup: Dict[str, Any] = {
            "model": self.model,
            "generationConfig": {
                "responseModalities": list(self.response_modalities),
                "speechConfig": {
                    "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": self.voice}},
                },
            },
            "systemInstruction": {"parts": [{"text": self.system_instruction}]},
        }
        if self.input_transcription:
            setup["inputAudioTranscription"] = {}
        if self.output_transcription:
            setup["outputAudioTranscription"] = {}
        return {"setup": setup}


__all__ = ["ChannelConfig", "SYSTEM_INSTRUCTION_TEMPLATE", "build_system_instruction"]
