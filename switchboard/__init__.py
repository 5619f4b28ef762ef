"""
Switchboard - Integration Gateway for third-party IT systems

Switchboard establishes and caches authenticated sessions against remote
systems (Zabbix, Bacula, UniFi, Guacamole, Wazuh, GLPI), discovers which API
shape each remote actually supports, and reports every failure through a
single error taxonomy.
"""

from switchboard._version import __version__

__all__ = ["__version__"]
