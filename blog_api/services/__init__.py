# Services package.
#
# Each module exposes a focused set of async functions that encapsulate
# business logic and database access for a single domain aggregate:
#
#   post_service    : filtered listing, detail + view count, CRUD, stats
#   comment_service : threaded comments, moderation
#   user_service    : registration and sign-in
#
# All service functions accept an AsyncSession as their first argument
# so that the router layer controls the transaction boundary via the
# ``get_db`` dependency.  Failures are raised as ``blog_api.exceptions``
# types and mapped to HTTP responses in ``main.py``.
