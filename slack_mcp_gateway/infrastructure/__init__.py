"""Infrastructure layer: transports, clients, providers and the Slack frontend."""
