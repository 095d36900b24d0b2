"""Cross-chain deploy adapter protocol.

Salt fortification and address derivation live in :py:mod:`multichain_deploy.adapter.fortify`,
the bridge payload codec in :py:mod:`multichain_deploy.adapter.payload`
and the adapter model in :py:mod:`multichain_deploy.adapter.contract`.
"""
