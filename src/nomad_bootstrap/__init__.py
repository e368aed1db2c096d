"""Install, configure and remove the HashiCorp Nomad agent on a Linux host."""

__version__ = "0.1.0"
