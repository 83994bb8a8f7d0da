#!/usr/bin/env python3
"""
Setup script for the Zulip standup scheduler
"""

from setuptools import setup
import os

# Read README for long description
readme_path = os.path.join(os.path.dirname(__file__), 'README.md')
try:
    with open(readme_path, 'r', encoding='utf-8') as f:
        long_description = f.read()
except FileNotFoundError:
    long_description = "Zulip Standup Bot - timezone-aware daily standup reminders and summaries"

# Read requirements
requirements_path = os.path.join(os.path.dirname(__file__), 'requirements.txt')
try:
    with open(requirements_path, 'r', encoding='utf-8') as f:
        requirements = [
            line.strip()
            for line in f
            if line.strip() and not line.startswith('#') and not line.startswith('-')
        ]
except FileNotFoundError:
    requirements = [
        'zulip>=0.8.0',
        'APScheduler>=3.10.4,<4',
        'pytz>=2023.3',
        'holidays>=0.35',
        'SQLAlchemy>=1.4,<3',
    ]

setup(
    name='zulip-standup-bot',
    version='2.0.0',
    description='Timezone-aware daily standup scheduler for Zulip',
    long_description=long_description,
    long_description_content_type='text/markdown',
    license='MIT',
    py_modules=[
        'channel_config',
        'config',
        'error_handler',
        'models',
        'notifier',
        'reminder_service',
        'response_ledger',
        'run_standup_bot',
        'scheduler',
        'session_manager',
        'standup_manager',
        'storage_manager',
        'templates',
        'time_window',
    ],
    python_requires='>=3.8',
    install_requires=requirements,
    extras_require={
        'dev': [
            'pytest>=7.4.0',
            'pytest-cov>=4.1.0',
            'black>=23.0.0',
            'isort>=5.12.0',
            'flake8>=6.0.0',
        ],
        'postgresql': [
            'psycopg2-binary>=2.9.0',
        ]
    },
    entry_points={
        'console_scripts': [
            'zulip-standup-bot=run_standup_bot:main',
        ],
    },
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
        'Topic :: Communications :: Chat',
        'Topic :: Office/Business',
    ],
    keywords='zulip bot standup scrum team automation scheduler',
    zip_safe=False,
)
