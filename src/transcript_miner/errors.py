"""Typed failures surfaced to callers."""


class TranscriptError(Exception):
    """Base class for failures raised by the parser and extractor."""


class FileNotFound(TranscriptError):
    def __init__(self, path):
        super().__init__(f"File not found: {path}")
        self.path = str(path)


class UnknownFormat(TranscriptError):
    def __init__(self, path):
        super().__init__(f"Unknown file format: {path}")
        self.path = str(path)


class ConversationNotFound(TranscriptError):
    def __init__(self, conversation_id):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id
