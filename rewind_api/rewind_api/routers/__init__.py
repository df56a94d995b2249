"""API routers, mounted under ``/api/v1`` by :func:`rewind_api.main.create_app`."""
