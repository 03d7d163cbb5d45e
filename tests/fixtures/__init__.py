"""
Pytest fixtures for the TunnelHttp test suite.

- socks_server: scripted SOCKS4/SOCKS5 proxy that doubles as the destination
  HTTP server, plus a TLS destination hook
- tls/: self-signed ``example.com`` certificate and key for TLS tunnel tests
"""
