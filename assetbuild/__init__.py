"""assetbuild - 多模块前端静态资源增量构建工具"""

__version__ = "0.4.0"
