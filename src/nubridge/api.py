"""User-facing API entrypoints for nubridge."""

import sys
from typing import TextIO

from nubridge.host import BridgeHost
from nubridge.introspection import IntrospectionProvider
from nubridge.protocol import ProtocolEngine
from nubridge.settings import BridgeSettings


def serve(
    settings: BridgeSettings | None = None,
    reader: TextIO | None = None,
    writer: TextIO | None = None,
    provider: IntrospectionProvider | None = None,
) -> None:
    """Run one bridge session until the shell says goodbye or closes the stream.

    :param settings: Session settings; defaults are used when omitted.
    :param reader: Input stream; defaults to ``sys.stdin``.
    :param writer: Output stream; defaults to ``sys.stdout``.
    :param provider: Optional introspection provider override.
    :raises OSError: If the transport fails.
    """
    resolved_settings: BridgeSettings = settings if settings is not None else BridgeSettings()
    resolved_reader: TextIO = reader if reader is not None else sys.stdin
    resolved_writer: TextIO = writer if writer is not None else sys.stdout

    with BridgeHost(resolved_settings, provider) as host:
        engine: ProtocolEngine = ProtocolEngine(
            host,
            resolved_reader,
            resolved_writer,
            protocol_name=resolved_settings.protocol_name,
            protocol_version=resolved_settings.protocol_version,
            wrap_pipeline_data=resolved_settings.wrap_pipeline_data,
        )
        engine.run()
