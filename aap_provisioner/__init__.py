"""Provision an Ansible Automation Platform job as an image-build step."""

__version__ = "0.1.0"
