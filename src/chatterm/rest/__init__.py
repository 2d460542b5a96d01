from .client import RestClient, RestResponse, join_url

__all__ = ["RestClient", "RestResponse", "join_url"]
