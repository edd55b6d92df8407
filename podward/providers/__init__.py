"""Provider transports implementing :class:`podward.protocols.PodTransport`."""
