"""Keycloak / Wekan access updater.

Converges a Keycloak realm and a Wekan instance against a declared
desired state (people, client roles, boards, taskforces).

To run a full update:
    from updater.core.runner import update_all

To use the Keycloak or Wekan collaborators alone:
    from updater.core.keycloak import KeycloakClient, KeycloakDirectory
    from updater.core.wekan import WekanClient, Wekan
"""
