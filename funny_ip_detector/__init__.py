"""
funny-ip-etcd-detector — finds IPv4 addresses with leading zeros in etcd stores.

Architecture: bolt store → revision/record decoding → candidate regex → strict grammar
Why:          strict parsers reject "010.0.0.1"; find such data before they do.
"""

__version__ = "1.0.0"
