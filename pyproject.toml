[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "trxflow"
version = "0.1.0"
description = "Task approval and transaction processing services connected over JSON RPC, HTTP and AMQP"
requires-python = ">=3.10"
keywords = ["transactions", "tasks", "approval", "rpc", "amqp", "microservices"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business :: Financial",
]
dependencies = [
    "flask",
    "sqlalchemy",
    "pika",
    "pymongo",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
trxflow-broker = "trxflow.broker:main"
trxflow-task = "trxflow.task_service:main"
trxflow-transaction = "trxflow.transaction_service:main"
trxflow-logger = "trxflow.logger_service:main"
trxflow-mail = "trxflow.mail_service:main"

[tool.hatch.build.targets.wheel]
packages = ["trxflow"]

[tool.pytest.ini_options]
addopts = "-ra"
