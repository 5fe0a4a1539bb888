from payments.auth import resolve_auth_context


class AuthContextMiddleware:
    """Attach ``request.auth_context`` so views get the caller explicitly.

    Must run after ``AuthenticationMiddleware``.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request.auth_context = resolve_auth_context(request)
        return self.get_response(request)
