"""pydantic domain types shared by the API, services and repositories."""
