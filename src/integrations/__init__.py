"""HTTP collaborators: the commerce catalog and the ERP integration."""
