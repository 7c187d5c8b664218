from setuptools import setup
import io


with io.open('README.md', encoding='utf-8') as f:
    long_description = f.read()

with io.open('requirements.txt', encoding='utf-8') as f:
    requirements = [r for r in f.read().split('\n') if len(r)]

setup(name='balancedopen',
      version='0.0.1',
      description='Negotiate lightning channels funded equally by both peers',
      long_description=long_description,
      long_description_content_type='text/markdown',
      license='MIT',
      packages=['balancedopen'],
      scripts=[],
      zip_safe=True,
      install_requires=requirements,
      extras_require={'test': ['pytest']})
