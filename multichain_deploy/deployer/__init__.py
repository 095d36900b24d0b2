"""Off-chain orchestration of multichain deployments.

See :py:class:`multichain_deploy.deployer.orchestrator.MultichainDeployer`.
"""
