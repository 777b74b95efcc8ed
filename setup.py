import setuptools

setuptools.setup(
    name="pairchat",
    version="0.1.0",
    description="Anonymous pairwise chat relay: interest-based matchmaking and ephemeral two-person rooms over Socket.IO.",
    packages=setuptools.find_packages(exclude=["tests", "tests.*"]),
    package_data={"pairchat.server.admin": ["templates/*.html"]},
    python_requires=">=3.10",
    install_requires=[
        "eventlet",
        "flask",
        "flask-login",
        "flask-socketio",
        "msgpack",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-timeout>=2.3",
        ],
    },
)
