from moraine.resolver.endpoint import EndpointResolutionError, EndpointResolver, first_meaningful_line

__all__ = ["EndpointResolver", "EndpointResolutionError", "first_meaningful_line"]
