"""Column files, node transport, mergers, repartitioning and manifests."""
