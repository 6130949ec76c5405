from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from .config import CanonicalizerConfig
from .debug import DebugSession
from .fallback import FallbackResolver, reason_for_category
from .models import (
    CanonicalForm,
    CanonicalPlugin,
    Fallback,
    FallbackReason,
    FallbackRecord,
    FieldOutcome,
    Ok,
    StepType,
)
from .normalization import (
    is_bounded_number,
    is_number,
    normalize_font_list,
    normalize_gpu_string,
    normalize_string,
    round_number,
)

logger = logging.getLogger(__name__)

NO_FONTS_DETECTED = "no fonts detected"

# Wire field name -> canonical field name, in canonical order.
CANONICAL_FIELDS: dict[str, str] = {
    "userAgent": "user_agent",
    "platform": "platform",
    "screenResolution": "screen_resolution",
    "colorDepth": "color_depth",
    "colorGamut": "color_gamut",
    "os": "os",
    "webGL.vendor": "webgl_vendor",
    "webGL.renderer": "webgl_renderer",
    "webGL.imageHash": "webgl_image_hash",
    "fontPreferences.detectedFonts": "fonts",
    "canvas.geometry": "canvas_geometry",
    "audio": "audio_fingerprint",
    "mathConstants": "math_constants",
    "plugins": "plugins",
}

_MISSING = object()


def is_erroring(value: Any) -> bool:
    return isinstance(value, BaseException) or (
        isinstance(value, Mapping) and "error" in value
    )


def _error_message(value: Any) -> BaseException | str:
    if isinstance(value, BaseException):
        return value
    return str(value.get("error"))


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def as_mapping(bag: Any) -> Mapping[str, Any]:
    if isinstance(bag, Mapping):
        return bag
    if hasattr(bag, "model_dump"):
        return bag.model_dump(mode="python", by_alias=True)
    raise TypeError(f"attribute bag must be a mapping, got {type(bag).__name__}")


@dataclass(frozen=True)
class CanonicalResult:
    form: CanonicalForm
    fallbacks: dict[str, list[FallbackRecord]] = field(default_factory=dict)
    outcomes: dict[str, FieldOutcome] = field(default_factory=dict)


class _FieldContext:
    """Per-call bookkeeping shared by the field rules."""

    def __init__(self, resolver: FallbackResolver, session: DebugSession | None) -> None:
        self.resolver = resolver
        self.session = session
        self.fallbacks: dict[str, list[FallbackRecord]] = {}
        self.outcomes: dict[str, FieldOutcome] = {}

    def substitute(self, path: str, reason: FallbackReason, original: Any) -> Fallback:
        outcome = self.resolver.substitute(path, reason, original)
        self.fallbacks.setdefault(path, []).append(outcome.record)
        self.outcomes[path] = outcome
        if self.session is not None:
            self.session.log_fallback(outcome.record)
            if reason == FallbackReason.MALFORMED_DATA:
                self.session.log_validation(
                    path,
                    "malformed value replaced by fallback",
                    outcome.record.original_value,
                    outcome.record.fallback_value,
                )
        return outcome

    def step(self, step_type: StepType, path: str, before: Any, after: Any) -> None:
        if self.session is not None:
            self.session.log_step(step_type, path, before, after)

    def validation(self, path: str, issue: str, original: Any = None) -> None:
        if self.session is not None:
            self.session.log_validation(path, issue, original)


class Canonicalizer:
    """Projects an attribute bag onto the fixed, rule-normalized CanonicalForm."""

    def __init__(
        self,
        resolver: FallbackResolver | None = None,
        config: CanonicalizerConfig | None = None,
    ) -> None:
        self.resolver = resolver or FallbackResolver()
        self.config = config or CanonicalizerConfig()
        self._privacy_re = re.compile(self.config.privacy_plugin_pattern)

    def canonicalize(self, bag: Any, *, session: DebugSession | None = None) -> CanonicalResult:
        source = as_mapping(bag)
        ctx = _FieldContext(self.resolver, session)

        user_agent = self._text(ctx, "userAgent", self._field(ctx, source, "userAgent", _is_str))
        platform = self._text(ctx, "platform", self._field(ctx, source, "platform", _is_str))
        screen = self._screen(ctx, self._field(ctx, source, "screenResolution", _is_resolution))
        color_depth = self._number(
            ctx, "colorDepth", self._field(ctx, source, "colorDepth", is_bounded_number)
        )
        color_gamut = self._text(
            ctx, "colorGamut", self._field(ctx, source, "colorGamut", _is_str)
        )
        os_value = self._os(ctx, self._field(ctx, source, "os", _is_os))

        webgl = self._block(ctx, source, "webGL")
        webgl_vendor = self._gpu(
            ctx, "webGL.vendor", self._subfield(ctx, webgl, "webGL.vendor", _is_str)
        )
        webgl_renderer = self._gpu(
            ctx, "webGL.renderer", self._subfield(ctx, webgl, "webGL.renderer", _is_str)
        )
        webgl_image_hash = self._text(
            ctx,
            "webGL.imageHash",
            self._subfield(ctx, webgl, "webGL.imageHash", _is_str),
        )

        font_block = self._block(ctx, source, "fontPreferences")
        fonts = self._fonts(
            ctx,
            self._subfield(ctx, font_block, "fontPreferences.detectedFonts", _is_sequence),
        )

        canvas = self._block(ctx, source, "canvas")
        canvas_geometry = self._text(
            ctx,
            "canvas.geometry",
            self._subfield(ctx, canvas, "canvas.geometry", _is_str),
        )

        audio = self._audio(ctx, self._field(ctx, source, "audio", _is_audio))
        math_constants = self._math(ctx, self._field(ctx, source, "mathConstants", _is_mapping))
        plugins = self._plugins(ctx, self._field(ctx, source, "plugins", _is_sequence))

        form = CanonicalForm(
            user_agent=user_agent,
            platform=platform,
            screen_resolution=screen,
            color_depth=color_depth,
            color_gamut=color_gamut,
            os=os_value,
            webgl_vendor=webgl_vendor,
            webgl_renderer=webgl_renderer,
            webgl_image_hash=webgl_image_hash,
            fonts=fonts,
            canvas_geometry=canvas_geometry,
            audio_fingerprint=audio,
            math_constants=math_constants,
            plugins=plugins,
        )
        if ctx.fallbacks:
            logger.debug("canonical form used fallbacks for %s", ", ".join(sorted(ctx.fallbacks)))
        return CanonicalResult(form=form, fallbacks=ctx.fallbacks, outcomes=ctx.outcomes)

    def _resolve(
        self,
        ctx: _FieldContext,
        path: str,
        raw: Any,
        valid: Callable[[Any], bool],
    ) -> Any:
        if raw is _MISSING or raw is None:
            return ctx.substitute(path, FallbackReason.MISSING_PROPERTY, None).value
        if is_erroring(raw):
            category = self.resolver.categorize_error(_error_message(raw), path)
            return ctx.substitute(path, reason_for_category(category), raw).value
        if not valid(raw):
            return ctx.substitute(path, FallbackReason.MALFORMED_DATA, raw).value
        ctx.outcomes[path] = Ok(raw)
        return raw

    def _field(
        self,
        ctx: _FieldContext,
        source: Mapping[str, Any],
        name: str,
        valid: Callable[[Any], bool],
    ) -> Any:
        return self._resolve(ctx, name, source.get(name, _MISSING), valid)

    def _block(self, ctx: _FieldContext, source: Mapping[str, Any], name: str) -> Any:
        """
        Resolve a composite block. A missing or erroring block falls back as a
        whole; its sub-fields are then read from the sentinel block.
        """
        return self._resolve(ctx, name, source.get(name, _MISSING), _is_mapping)

    def _subfield(
        self,
        ctx: _FieldContext,
        block: Mapping[str, Any],
        path: str,
        valid: Callable[[Any], bool],
    ) -> Any:
        key = path.rsplit(".", 1)[-1]
        return self._resolve(ctx, path, block.get(key, _MISSING), valid)

    def _text(self, ctx: _FieldContext, path: str, value: Any) -> str:
        normalized = normalize_string(value)
        if normalized != value:
            ctx.step(StepType.STRING_NORMALIZE, path, value, normalized)
        return normalized

    def _gpu(self, ctx: _FieldContext, path: str, value: Any) -> str:
        normalized = normalize_gpu_string(value)
        if normalized != value:
            ctx.step(StepType.GPU_NORMALIZE, path, value, normalized)
        return normalized

    def _number(self, ctx: _FieldContext, path: str, value: Any) -> str:
        rounded = round_number(value, self.config.numeric_precision)
        ctx.step(StepType.NUMERIC_ROUND, path, value, rounded)
        return rounded

    def _screen(self, ctx: _FieldContext, value: Any) -> list[str]:
        dimensions = sorted(round_number(item, self.config.numeric_precision) for item in value)
        ctx.step(StepType.NUMERIC_ROUND, "screenResolution", value, dimensions)
        return dimensions

    def _os(self, ctx: _FieldContext, value: Any) -> dict[str, str]:
        if isinstance(value, str):
            value = {"os": value}
        result = {
            normalize_string(key): normalize_string(item)
            for key, item in value.items()
            if item is not None
        }
        return dict(sorted(result.items()))

    def _fonts(self, ctx: _FieldContext, value: Any) -> str:
        fonts = normalize_font_list(value)
        if not fonts:
            ctx.step(
                StepType.STRING_NORMALIZE,
                "fontPreferences.detectedFonts",
                value,
                NO_FONTS_DETECTED,
            )
            return NO_FONTS_DETECTED
        joined = ",".join(fonts)
        ctx.step(StepType.ARRAY_SORT, "fontPreferences.detectedFonts", value, joined)
        return joined

    def _audio(self, ctx: _FieldContext, value: Any) -> str:
        if is_number(value):
            return self._number(ctx, "audio", value)
        return self._text(ctx, "audio", value)

    def _math(self, ctx: _FieldContext, value: Any) -> dict[str, str] | str:
        if isinstance(value, str):
            return normalize_string(value)
        constants: dict[str, str] = {}
        for key in sorted(value, key=str):
            name = normalize_string(key)
            raw = value[key]
            path = f"mathConstants.{name}"
            if not is_bounded_number(raw):
                raw = ctx.substitute(path, FallbackReason.MALFORMED_DATA, raw).value
            constants[name] = (
                round_number(raw, self.config.numeric_precision)
                if is_bounded_number(raw)
                else normalize_string(raw)
            )
        ctx.step(StepType.NUMERIC_ROUND, "mathConstants", value, constants)
        return constants

    def _plugins(self, ctx: _FieldContext, value: Any) -> list[CanonicalPlugin]:
        plugins: list[CanonicalPlugin] = []
        for index, entry in enumerate(value):
            path = f"plugins[{index}]"
            if not isinstance(entry, Mapping):
                ctx.validation(path, "plugin entry is not an object", entry)
                continue
            name = entry.get("name")
            if not isinstance(name, str) or not normalize_string(name):
                ctx.validation(path, "plugin entry has no name", entry)
                continue
            if self._privacy_re.search(name):
                ctx.step(StepType.PLUGIN_FILTER, path, name, None)
                continue
            plugins.append(
                CanonicalPlugin(name=normalize_string(name), types=_mime_types(entry))
            )
        plugins.sort(key=lambda plugin: (plugin.name, plugin.types))
        return plugins


def _mime_types(entry: Mapping[str, Any]) -> list[str]:
    mime_types = entry.get("mimeTypes")
    if not _is_sequence(mime_types):
        return []
    types: list[str] = []
    for mime in mime_types:
        raw = mime.get("type") if isinstance(mime, Mapping) else mime
        if isinstance(raw, str) and normalize_string(raw):
            types.append(normalize_string(raw))
    return sorted(types)


def _is_str(value: Any) -> bool:
    return isinstance(value, str)


def _is_mapping(value: Any) -> bool:
    return isinstance(value, Mapping)


def _is_resolution(value: Any) -> bool:
    if not _is_sequence(value) or not value:
        return False
    return all(is_bounded_number(item) for item in value)


def _is_os(value: Any) -> bool:
    if isinstance(value, str):
        return True
    return isinstance(value, Mapping) and all(
        isinstance(item, str) or item is None for item in value.values()
    )


def _is_audio(value: Any) -> bool:
    return is_bounded_number(value) or isinstance(value, str)
