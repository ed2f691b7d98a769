"""Clients for the component catalog and tutorial search collaborators."""
