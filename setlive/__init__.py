"""setlive: node-local deployment reconciler.

Reads which application versions should be active on this host from the
intent store (Consul KV) and drives each application there:
 - stop the runit service
 - regenerate its servicebuilder descriptor
 - point ``<basedir>/current`` at the active install
 - start the service again

One pass per invocation; a periodic timer is expected to call it again.
"""
