from setuptools import setup, find_packages

setup(
    name='github-code-stats',
    version='0.1',
    description='Team code statistics and Copilot AI-assistance estimates for a GitHub organization.',
    author='e271828-',
    author_email='e271828-@users.noreply.github.com',
    packages=find_packages(exclude=['tests', 'tests.*']),
    python_requires='>=3.8',
    install_requires=[
        'dash-bootstrap-components',
        'dash_bootstrap_templates',
        'PyGithub',
        'pandas',
        'plotly',
        'dash',
        'flask',
        'toolz',
        'python-dotenv',
    ],
    extras_require={
        'test': ['pytest', 'requests'],
    },
    entry_points={
        'console_scripts': [
            'github-code-stats=github_code_stats.cli:main',
            'github-code-stats-dashboard=github_code_stats.cli:dashboard_main',
            'github-code-stats-consolidate=github_code_stats.cli:consolidate_main',
        ],
    },
)
