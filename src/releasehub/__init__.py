"""
ReleaseHub: release distribution and auto-update server.
"""
