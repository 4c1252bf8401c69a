"""
Ubuntu Hardening

Interactive one-shot hardening of a freshly installed Ubuntu host:
package updates, UFW firewall, a privileged user with passwordless sudo,
SSH key-only login, root login lockout and a Fail2Ban SSH jail.
"""

APP_NAME: str = "Ubuntu Hardening"
VERSION: str = "1.0.0"
