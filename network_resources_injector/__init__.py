"""
Network resources injector.

Kubernetes mutating admission webhook that injects network device resource
requests, Downward API volumes, node selectors and operator-defined annotations
into Pods based on their network attachment selections.
"""

__version__ = "1.0.0"
