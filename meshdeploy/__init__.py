"""meshdeploy - provision GKE, install Cloud Service Mesh and deploy Bookinfo."""

__version__ = "0.1.0"
