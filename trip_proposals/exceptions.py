class ProposalError(Exception):
    """
    Base error for trip-proposal operations. Carries the HTTP status the API reports.
    """

    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationFailed(ProposalError):
    status_code = 400


class NotFound(ProposalError):
    status_code = 404

    def __init__(self, entity, identifier):
        super().__init__(f"{entity} {identifier} not found")
        self.entity = entity
        self.identifier = identifier
