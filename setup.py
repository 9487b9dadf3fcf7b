"""
Lucent - Async Active Record ORM

Model classes bound to relational tables, a fluent query builder,
batched relationship loading, lifecycle hooks and serialization.
"""

from setuptools import setup, find_packages

extras_require = {
    'test': [
        'pytest>=7.0',
    ],
    'dev': [
        'mypy>=0.950',
        'build>=0.7.0',
    ],
}
extras_require['full'] = extras_require['test'] + extras_require['dev']

setup(
    name="lucent",
    version="0.1.0",
    description="Async Active Record ORM - fluent queries, batched relation loading, lifecycle hooks",
    packages=find_packages(exclude=['tests', 'tests.*']),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Database :: Front-Ends",
        "License :: OSI Approved :: MIT License",
        "Framework :: AsyncIO",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.12",
        "Typing :: Typed",
    ],
    python_requires=">=3.10",
    # aiosqlite 驱动 sqlite 引擎
    install_requires=[
        'aiosqlite>=0.17.0',
    ],
    extras_require=extras_require,
    keywords="orm active-record asyncio sqlite query-builder",
)
