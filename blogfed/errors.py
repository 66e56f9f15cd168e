"""
blogfed/errors.py

Hierarquia de erros do núcleo de federação.

Cada erro carrega o status HTTP com que deve ser exposto quando chega
a um endpoint. Os handlers registrados em `main.py` convertem qualquer
`FederationError` numa resposta JSON `{"error": ...}`.
"""


class FederationError(Exception):
    status_code = 500
    default_message = "Federation error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class CollectionNotFound(FederationError):
    status_code = 404
    default_message = "Not found"


class NotAcceptable(FederationError):
    status_code = 406
    default_message = "Not acceptable"


class SignatureInvalid(FederationError):
    status_code = 401
    default_message = "Unauthorized"


class MalformedActor(FederationError):
    status_code = 400
    default_message = "Malformed actor"


class MalformedActivity(FederationError):
    status_code = 400
    default_message = "Malformed activity"


class RemoteError(FederationError):
    """Base para falhas classificadas de chamadas HTTP a instâncias remotas."""

    status_code = 502
    default_message = "Remote error"


class RemoteNotFound(RemoteError):
    status_code = 404
    default_message = "Remote resource not found"


class TransientRemote(RemoteError):
    default_message = "Remote temporarily unavailable"


class PermanentRemote(RemoteError):
    default_message = "Remote rejected the request"


class InternalError(FederationError):
    status_code = 500
    default_message = "Internal error"
