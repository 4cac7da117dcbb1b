#!/usr/bin/env python

import setuptools

setuptools.setup(
    name="edgeai",
    version="0.3.0",
    author="Chen Yang",
    author_email="healthonrails@gmail.com",
    description="In-process ONNX inference runtime for image-to-image, image captioning and text-to-text models.",
    packages=setuptools.find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    install_requires=['numpy>=1.22',
                      'Pillow>=9.3.0',
                      'onnxruntime>=1.16',
                      'tokenizers',
                      'PyYAML>=5.3',
                      'termcolor>=2.0',
                      'colorama>=0.4; platform_system=="Windows"',
                      ],
    extras_require={
        'test': ['pytest>=7.0',
                 'onnx>=1.14',
                 ],
    },
    python_requires='>=3.10',
)
