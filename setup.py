from setuptools import setup

setup(
    name="bondsman",
    version="1.0",
    description="Local AI shell assistant backed by Ollama",
    python_requires=">=3.9",
    py_modules=[
        "main",
        "chat_engine",
        "ollama_service",
        "history",
        "session",
        "system_facts",
        "errors",
        "i18n",
    ],
    data_files=[("share/bondsman/locales", ["locales/en.json", "locales/es.json"])],
    install_requires=[
        "requests",
        "rich",
        "prompt_toolkit",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "bondsman=main:main",
        ],
    },
)
