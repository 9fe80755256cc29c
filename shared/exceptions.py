"""RFC 9457 Problem Details exception hierarchy.

All API errors extend ProblemDetailError and are converted to
application/problem+json responses by the exception handler middleware.
"""

_PROBLEM_BASE = "https://whoop-sleep-sync.dev/problems"


class ProblemDetailError(Exception):
    def __init__(
        self,
        type_uri: str,
        title: str,
        status: int,
        detail: str,
        violations: list[dict] | None = None,
    ):
        self.type_uri = type_uri
        self.title = title
        self.status = status
        self.detail = detail
        self.violations = violations
        super().__init__(detail)


class ValidationError(ProblemDetailError):
    def __init__(self, violations: list[dict]):
        super().__init__(
            type_uri=f"{_PROBLEM_BASE}/validation-error",
            title="Validation Error",
            status=422,
            detail=f"Request body contains {len(violations)} validation error(s)",
            violations=violations,
        )


class NotFoundError(ProblemDetailError):
    def __init__(self, detail: str):
        super().__init__(
            type_uri=f"{_PROBLEM_BASE}/not-found",
            title="Not Found",
            status=404,
            detail=detail,
        )


class UnauthenticatedError(ProblemDetailError):
    def __init__(self, detail: str = "Missing or invalid webhook signature"):
        super().__init__(
            type_uri=f"{_PROBLEM_BASE}/unauthenticated",
            title="Unauthenticated",
            status=401,
            detail=detail,
        )


class MisconfiguredError(ProblemDetailError):
    def __init__(self, detail: str = "Server misconfigured"):
        super().__init__(
            type_uri=f"{_PROBLEM_BASE}/misconfigured",
            title="Server Misconfigured",
            status=400,
            detail=detail,
        )


class MissingRegistrationFieldsError(ProblemDetailError):
    def __init__(self, missing: list[str]):
        super().__init__(
            type_uri=f"{_PROBLEM_BASE}/missing-registration-fields",
            title="Missing Registration Fields",
            status=400,
            detail="whoopUserId, walletAddress and accessToken are required",
            violations=[
                {"field": name, "message": "Field required", "constraint": "required"}
                for name in missing
            ],
        )


class WalletConflictError(ProblemDetailError):
    def __init__(self, wallet_address: str):
        super().__init__(
            type_uri=f"{_PROBLEM_BASE}/wallet-conflict",
            title="Wallet Already Linked",
            status=409,
            detail=(
                f"Wallet '{wallet_address}' is already linked to a different Whoop user. "
                "Each wallet can be registered to exactly one Whoop account."
            ),
        )
