"""Error taxonomy for cartwise capabilities."""


class CartwiseError(Exception):
    """Base for all cartwise errors."""

    pass


class MissingCredentialError(CartwiseError):
    """No API key configured for the model's provider."""

    def __init__(self, provider: str, model: str):
        super().__init__(f"API key not configured for {provider} (model {model})")
        self.provider = provider
        self.model = model


class UnsupportedMediaError(CartwiseError):
    """An image was sent to a model without vision support."""

    def __init__(self, model: str):
        super().__init__(f"Model {model} does not support image input")
        self.model = model


class TransportError(CartwiseError):
    """Network or HTTP-layer failure. Status and body are kept as-is."""

    def __init__(self, message: str, status_code: int | None = None, body: bytes = b""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ExtractionError(CartwiseError):
    """No usable JSON candidate or pattern match in a model response."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class AnalysisError(CartwiseError):
    """A structured capability could not produce its record."""

    def __init__(self, message: str, explanation: str | None = None):
        super().__init__(message)
        self.explanation = explanation


class TaxAnalysisError(AnalysisError):
    """Tax-rate retry budget exhausted; the item's tax is unknown."""

    pass


class PriceGuessError(AnalysisError):
    pass


class AdditiveAnalysisError(AnalysisError):
    pass
