"""Authentication.

Learn: Credentials are issued by an external identity provider. We only
verify them (auth.identity) and map the provider's subject id to an
internal Account (auth.dependencies). Authorization lives in taskroom.access.
"""
