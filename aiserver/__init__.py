"""AI media generation backend: reliable clients for third-party generation APIs."""
