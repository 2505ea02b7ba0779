"""Relay toggles handed to the transformers and the stream reshaper."""

from __future__ import annotations

from dataclasses import dataclass

from nimrelay.config.settings import Settings, settings


@dataclass(frozen=True, slots=True)
class RelayOptions:
    show_reasoning: bool = False
    thinking_mode: bool = False
    stream_error_event: bool = False

    @classmethod
    def from_settings(cls, source: Settings) -> "RelayOptions":
        return cls(
            show_reasoning=source.show_reasoning,
            thinking_mode=source.enable_thinking_mode,
            stream_error_event=source.stream_error_event,
        )


relay_options = RelayOptions.from_settings(settings)
