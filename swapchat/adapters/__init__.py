"""Message sources and sinks feeding the conversation actor."""
